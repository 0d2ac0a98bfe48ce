"""Tool implementations exposed to the reviewing agent."""
