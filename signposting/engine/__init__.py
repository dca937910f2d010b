"""
Effective-view engine — pure functions, no Flask or database access.

Submodules:
    - types: EffectiveItem and the content-field table
    - patch: override patch parsing (present value vs. inherit)
    - resolver: merges the library layers into one surgery's view
    - partition: clinical-review partitioning of a resolved view
"""
