"""Delimitation methods: SOM training and codebook clustering."""
