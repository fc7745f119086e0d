"""Pipeline core: extraction, matching, state machine, analysis, orchestration."""
