"""
College catalog service.

Serves read-heavy catalog views (dashboard statistics, listings, detail pages,
predictor rankings) through a two-tier cache in front of the document store.
"""
