"""Real-time presence and message relay over WebSockets.

Components:
    - ConnectionRegistry: live connections, lookup by identity
    - HeartbeatMonitor: ping / death-timer liveness per connection
    - PresenceBroadcaster: pushes online snapshots on membership changes
    - AttachmentIngestor: stores inline data-URI attachments as files
    - MessageRouter: validates, persists and forwards chat messages
    - RelayHub: owns the above and drives the connection lifecycle
"""
