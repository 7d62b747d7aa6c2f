"""Feature plugins discovered at startup via PLUGIN_PACKAGES."""
