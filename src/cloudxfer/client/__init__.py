"""Client module - Credentials, REST calls and transfers."""
