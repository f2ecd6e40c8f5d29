from prometheus_client import CollectorRegistry

# Dedicated registry so tests and multiple app instances do not collide with
# the default global registry.
REGISTRY = CollectorRegistry(auto_describe=True)
