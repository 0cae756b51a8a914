"""HTTP trigger and job admin API."""
