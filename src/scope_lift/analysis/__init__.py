"""
Analysis Subpackage.

Read-only stages of the pipeline.

Modules:
    - ``scope``: Scope & alias analysis of one source unit (bindings, accessors, call sites).
    - ``groups``: Union-find partition into sharing groups.
    - ``purity``: Side-effect scanner used by the trivial-logic exemption.
    - ``signatures``: Structural signature per pattern kind.
    - ``classifier``: Picks one catalog kind per group.
    - ``exemptions``: Do-not-refactor rules.
"""
