"""Configuration loading (YAML file, .env, environment variables).

Bounded Context: Configuration
"""
