"""Analysis modules: column features and relationship resolution."""
