"""Social feed: posts, reactions, comments and user notifications."""
