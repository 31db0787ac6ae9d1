"""mqlbuild - compile orchestration for MQL4/MQL5 sources.

Resolves which root file (.mq4/.mq5) should be compiled for a given header
(.mqh), drives MetaEditor natively or through Wine, turns its log into
structured diagnostics and schedules background syntax checks.
"""

__version__ = "0.4.0"
