"""Action executors that turn a decided action into a reply payload."""
