"""Broker integrations for pgsub."""
