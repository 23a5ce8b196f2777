"""Registry services built on the metadata and blob stores."""
