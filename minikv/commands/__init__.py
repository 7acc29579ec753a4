"""Command handlers for strings, lists, streams, pub/sub and replication."""