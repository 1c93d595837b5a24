"""Core machinery: hashing, atomic filesystem commits, the local store, the
LRU evictor, the build pipeline and the resolver facade."""
