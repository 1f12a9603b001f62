"""Prompt templates for each agent role."""

from __future__ import annotations

from pathlib import Path

from build_forge.config import ProjectPaths
from build_forge.orchestrator.codec import serialize_unit
from build_forge.orchestrator.journal import Journal
from build_forge.orchestrator.models import CiResult, Unit
from build_forge.orchestrator.vcs import GitRepository

_RECORD_TEMPLATE = (
    '(unit :id "u1" :status pending :independent t :grade 1 :skill default '
    ':attempt 0 :attempt_limit 5 :escalation {escalation} :proof "SHELL" :description "Task")'
)

STRIKE_PROMPT = """\
=== WORK ORDER ===
[{unit_id}] {description}
Grade: {grade}{complex_note}
Skill: {skill}{skill_note}
Attempt: {attempt}/{attempt_limit}
Proof: {proof}
{location}
=== BLUEPRINT ===
{blueprint}

=== NOTES ===
{notes}

=== RECENT PROGRESS ===
{journal}

=== GIT DIFF ===
{git_diff}

"""

STRIKE_INSTRUCTIONS = """\
=== INSTRUCTIONS ===
1. Complete this unit of work.
2. Create or modify all necessary files.
3. Add useful patterns to AGENTS.md.
4. End with exactly one line: COMMAND: <shell command that verifies the work>

RULES:
- NO QUESTIONS. You are the expert.
- NO PROSE. Just code and the COMMAND line.
- The COMMAND and the proof must both pass for the unit to be done.
"""

STRIKE_RETRY = """\
!!! PREVIOUS ATTEMPT FAILED !!!
{failure}
!!! ANALYZE AND FIX, then end with: COMMAND: <shell command> !!!
"""

RESMELT_PROMPT = """\
=== RE-SMELT ANALYSIS ===
A unit failed after exhausting all of its attempts. Analyze the failure and fix it.

FAILED UNIT:
{record}

BLUEPRINT:
{blueprint}

FAILURE LOGS:
{failure_logs}

GIT STATE:
{git_state}

=== YOUR TASK ===
Choose ONE action:
OPTION A - REWRITE: output one corrected unit record.
OPTION B - SPLIT: output 2-4 smaller unit records.
OPTION C - IMPOSSIBLE: output a line "IMPOSSIBLE: <reason>".

Record format, one per line:
{template}

RULES:
- Every record MUST have :escalation {escalation}
- Fix the root cause, do not just retry the same thing
- Output ONLY unit records or the IMPOSSIBLE line
"""

RECONSIDER_PROMPT = """\
=== RECONSIDER ===
This unit was already rewritten once and failed AGAIN. Step back and
fundamentally rethink the approach instead of tweaking it.

TWICE-FAILED UNIT:
{record}

BLUEPRINT:
{blueprint}

FAILURE LOGS:
{failure_logs}

GIT STATE:
{git_state}

=== YOUR TASK ===
Ask yourself whether the work is achievable in the current repository, whether
the proof tests the right thing, and whether prerequisites are missing.
Choose ONE action:
OPTION A - REWRITE: a fundamentally different unit for the same goal.
OPTION B - SPLIT: 2-4 smaller, independently verifiable units.
OPTION C - IMPOSSIBLE: output a line "IMPOSSIBLE: <reason>".

Record format, one per line:
{template}

RULES:
- Every record MUST have :escalation {escalation}
- Do NOT repeat the same proof or the same description
- Output ONLY unit records or the IMPOSSIBLE line
"""

REGENERATE_PROMPT = """\
=== REGENERATE UNITS ===
These units failed repeatedly and must be replaced:

{failed_units}

BLUEPRINT:
{blueprint}

GIT STATE:
{git_state}

Write replacement unit records that reach the same goals by a different route.
Record format, one per line:
{template}

Output ONLY unit records.
"""

SURVEY_PROMPT = """\
ROLE: Master Surveyor. Analyze this commission as a domain expert.

COMMISSION:
{commission}

Create a thorough BLUEPRINT in markdown with these sections:
## 1. OVERVIEW
## 2. COMPONENTS (name, purpose, complexity 1-5, dependencies, skill web|api|cli|default)
## 3. ARCHITECTURE
## 4. DEPENDENCY GRAPH
## 5. RISKS
## 6. BUILD SEQUENCE (foundation first, parallel work marked independent)
## 7. ACCEPTANCE CRITERIA

RULES:
- You are the EXPERT. Make ALL decisions yourself.
- NO QUESTIONS. If uncertain, choose the best option.
- NO PREAMBLE. Output ONLY the blueprint markdown.
"""

FOUND_PROMPT = """\
ROLE: Master Founder. Turn the blueprint into work units.

COMMISSION:
{commission}

BLUEPRINT:
{blueprint}

OUTPUT: unit records only, one per line, no prose.

TEMPLATE:
{template}

FIELDS:
- :id unique (u1, u2, ...)
- :status always pending
- :independent t (no dependencies, may run in parallel) or nil (runs in order)
- :grade 1-5 complexity (3 and above gets plan mode)
- :skill web|api|cli|default
- :attempt_limit attempts allowed (5 simple, 8 or more complex)
- :proof shell command that exits 0 when the work is done

PROOF EXAMPLES: test -f FILE, test -d DIR, grep -q PATTERN FILE, npm test, pytest -q

OUTPUT ONLY UNIT RECORDS:
"""

SELF_QUERY_PROMPT = """\
{previous}

---
[SELF-QUERY RESOLUTION]
You asked questions above. You are the expert. Answer them yourself:
- Make decisive choices based on best practices
- Choose the most sensible option when uncertain
- Do not ask for clarification, decide and proceed

Now output the COMPLETE deliverable with all decisions made.
NO QUESTIONS. NO PREAMBLE. Just the final output.
"""

REVIEW_PROMPT = """\
=== CODE REVIEW ===
Review this branch before it is merged into {main_branch}.

UNIT: {unit_id}
BRANCH: {branch}

=== CHECK RESULTS ===
{checks}

=== DIFF ===
{diff}

=== YOUR TASK ===
Evaluate correctness, quality, integration safety and potential bugs.

OUTPUT FORMAT (exactly this):
STATUS: APPROVED|REJECTED
COMMENTS:
<1-3 sentences>

RULES:
- If checks passed and the code looks reasonable, APPROVE
- Only REJECT for serious issues
"""


class PromptBuilder:
    """Render prompts with project context read from disk."""

    def __init__(self, paths: ProjectPaths, vcs: GitRepository, journal: Journal) -> None:
        self.paths = paths
        self.vcs = vcs
        self.journal = journal

    def strike(
        self,
        unit: Unit,
        *,
        failure: str | None = None,
        worktree: Path | None = None,
    ) -> str:
        location = ""
        if worktree is not None:
            location = f"Working directory: {worktree} (isolated worktree, branch "
            location += f"{self.vcs.branch_name(unit.id)})\n"
        prompt = STRIKE_PROMPT.format(
            unit_id=unit.id,
            description=unit.description,
            grade=unit.grade,
            complex_note=" (COMPLEX: think through edge cases)" if unit.is_complex else "",
            skill=unit.skill.value,
            skill_note=" (browser testing available)" if unit.is_web else "",
            attempt=unit.attempt,
            attempt_limit=unit.attempt_limit,
            proof=unit.proof,
            location=location,
            blueprint=_read_or(self.paths.blueprint, "None"),
            notes=_read_or(self.paths.notes, "None yet"),
            journal=self.journal.recent() or "Empty",
            git_diff=self.vcs.diff_stat(worktree) or "No changes",
        )
        if failure:
            return prompt + STRIKE_RETRY.format(failure=failure)
        return prompt + STRIKE_INSTRUCTIONS

    def resmelt(self, unit: Unit, failure_logs: str) -> str:
        return RESMELT_PROMPT.format(
            record=serialize_unit(unit),
            blueprint=_read_or(self.paths.blueprint, "None"),
            failure_logs=failure_logs or "No logs",
            git_state=self.vcs.recent_log() or "No history",
            template=_RECORD_TEMPLATE.format(escalation=unit.escalation + 1),
            escalation=unit.escalation + 1,
        )

    def reconsider(self, unit: Unit, failure_logs: str) -> str:
        return RECONSIDER_PROMPT.format(
            record=serialize_unit(unit),
            blueprint=_read_or(self.paths.blueprint, "None"),
            failure_logs=failure_logs or "No logs",
            git_state=self.vcs.recent_log() or "No history",
            template=_RECORD_TEMPLATE.format(escalation=unit.escalation + 1),
            escalation=unit.escalation + 1,
        )

    def regenerate(self, units: list[Unit], escalation: int) -> str:
        return REGENERATE_PROMPT.format(
            failed_units="\n".join(f"[{unit.id}] {unit.description}" for unit in units),
            blueprint=_read_or(self.paths.blueprint, "None"),
            git_state=self.vcs.recent_log() or "No history",
            template=_RECORD_TEMPLATE.format(escalation=escalation),
        )

    def survey(self, commission: str) -> str:
        return SURVEY_PROMPT.format(commission=commission)

    def found(self, commission: str, blueprint: str) -> str:
        return FOUND_PROMPT.format(
            commission=commission,
            blueprint=blueprint,
            template=_RECORD_TEMPLATE.format(escalation=0),
        )

    def self_query(self, previous: str) -> str:
        return SELF_QUERY_PROMPT.format(previous=previous)

    def review(self, unit_id: str, diff: str, ci: CiResult) -> str:
        lines = []
        for check in ci.checks:
            lines.append(f"- {check.name} ({check.command}): {'PASSED' if check.passed else 'FAILED'}")
            if not check.passed:
                lines.append(f"  {check.output.strip()[:200]}")
        return REVIEW_PROMPT.format(
            main_branch=self.vcs.main_branch,
            unit_id=unit_id,
            branch=self.vcs.branch_name(unit_id),
            checks="\n".join(lines) or "No checks configured",
            diff=diff or "(empty diff)",
        )


def _read_or(path: Path, default: str) -> str:
    try:
        return path.read_text("utf-8")
    except FileNotFoundError:
        return default
