"""recordkit: schema-defined record collections guarded by filter-expression
rules and extended through ordered hook chains."""

__version__ = "0.1.0"
