"""Project-specific framework utilities.

This package holds the structural pieces of the CI pipeline that are generic
*within* this repo (typed run config, source checkout, run artifacts and
history) but excludes the concrete track definitions.

Common entrypoints:

- `build_pipeline.framework.config`: `RunConfig.from_dict` (strict config parsing)
- `build_pipeline.framework.artifacts`: run report + run index writing
- `build_pipeline.framework.history`: run index summaries

For reusable, project-agnostic execution primitives, use `trackkit`.
"""
