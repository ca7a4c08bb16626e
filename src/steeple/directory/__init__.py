"""Read and write access discipline over the directory tables."""
