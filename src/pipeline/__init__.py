"""
Pipeline Package
================
Orchestration and presentation of one analysis run.

Modules:
  insight_pipeline - runs every analysis with success/degraded/failed status
  recommenders     - rule-based and Gemini-backed score recommendations
  summary_builder  - text digest and 3-bullet summary of a run
"""
