"""
Analytics Package
=================
Higher-level analyses built on top of the correlation engine.

Modules:
  pattern_layer   - cascades, threshold effects, weekday patterns, timelines
  insight_scoring - multi-factor ranking of correlations into a hero insight
"""
