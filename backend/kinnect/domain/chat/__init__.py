"""Chat: conversations, messages, presence-aware delivery over Socket.IO."""
