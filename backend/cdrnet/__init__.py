"""Call-record contact network explorer."""
