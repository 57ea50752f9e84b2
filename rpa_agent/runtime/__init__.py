"""Browser, registry, binding and scheduling runtime."""
