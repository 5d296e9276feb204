"""
SnapMaster GCP provider: runs GCP actions and manages Pub/Sub triggers on
behalf of the SnapMaster engine.
"""
