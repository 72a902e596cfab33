"""
Map Knitter test suite

Structure:
- unit/: tests for individual components (scale, reaper, export state, store, toolkit)
- integration/: whole export runs through the runner and the HTTP API
- fakes.py: shared test doubles and builders
"""
