"""
Core data and analytics layer.

This package contains:
- models: record, query and report types shared by every layer
- text / vocabulary: normalization, term matching and the static keyword tables
- data_loader: read-only citizen record source (local JSON or remote endpoint)
- resident_filter: segment and name-search resident selection
- analysis_engine: per-domain statistics, insights and recommendations
- audit: statistics snapshot and grounding checks
"""
