"""
Transformation Subpackage.

Modules:
    - ``strategies``: Per-kind factory shape (bindings kept, release callables).
    - ``planner``: Builds TransformationPlans or PlanBlocked rejections.
    - ``applier``: LibCST rewrite of one plan.
    - ``replay``: Call-sequence replay with recording stubs.
    - ``verifier``: Compile, fixpoint and replay checks.
"""
