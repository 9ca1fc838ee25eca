"""
Composite Risk Read API.

FastAPI app serving stored snapshots, history and the alert
log. Start it with run_dashboard.py.
"""
