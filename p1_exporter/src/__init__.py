"""
HomeWizard P1 exporter package.

Polls the local HomeWizard P1 meter JSON API on a fixed cadence, keeps the
latest reading in an in-process metric registry, and serves it to Prometheus
scrapers in the text exposition format.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""
