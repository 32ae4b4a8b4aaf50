"""Rule translation and iptables services."""
