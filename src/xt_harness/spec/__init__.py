from xt_harness.spec.config import Check, ConfigError, Crate, load_crates

__all__ = ["Check", "ConfigError", "Crate", "load_crates"]
