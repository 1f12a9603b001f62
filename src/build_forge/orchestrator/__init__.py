"""Build orchestrator around a flat-file ledger of work units.

A run goes planning -> forge -> review -> analysis:

- ``planning`` turns a commission into ``BLUEPRINT.md`` and the ledger (``PLAN.md``).
- ``scheduler`` drains pending units: independent ones in parallel batches on a
  thread pool, the rest one at a time in ledger order. ``strike`` runs the
  bounded attempt loop of one unit (prompt, agent, ``COMMAND:`` directive,
  shell, proof, commit).
- ``resmelt`` rewrites or splits a unit that ran out of attempts.
- ``review`` gates isolated unit branches behind checks and an agent reviewer.
- ``analysis`` classifies what is still failed and resets, reorders,
  reconsiders or regenerates it for the next cycle.

The ledger file is the only shared state. Every mutation is a
load-mutate-save ``LedgerStore.transaction`` applied by the scheduler thread.
"""
