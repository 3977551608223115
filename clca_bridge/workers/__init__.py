"""
CLCA Bridge - Workers

Run the retry worker as a module:
    python -m clca_bridge.workers.dlq_worker
"""
