"""
Server — HTTP surface for the export pipeline.

- POST /maps/{id}/export starts an export in the background (409 while one runs)
- GET  /maps/{id}/export returns the current status string for pollers
- GET  /maps, /maps/{id}/nodes, POST /maps/{id}/reap, /health

Run:
    uvicorn server.app:app --port 8000
"""
