"""
visual_matcher — Visual product similarity search.

Ranks catalog products against a query image by combining deep backbone
features with an RGB color histogram, caching each product's features in
a key-value store so they are extracted only once.

Modules:
    engine          SearchEngine facade and lifecycle
    index           Feature cache + ranked catalog scan
    embedder        Backbone handle and feature extraction
    histograms      RGB color histogram extraction
    scoring         Cosine / combined similarity and ranking
    fetcher         Remote image download with failure classification
    preprocessing   Image decoding and resizing
    catalog         Product catalog over the store
    store           Redis and in-memory key-value stores
    index_builder   Batch feature cache warm-up
"""

__version__ = "1.0.0"
