# minikv

minikv is a small in-memory key-value server that speaks the RESP wire
protocol, so a client that talks RESP can send it commands over TCP.

## What it supports

- Strings: `PING`, `ECHO`, `SET` (with `PX` / `EX` expiry), `GET`, `INCR`,
  `TYPE`, `KEYS *`
- Lists: `LPUSH`, `RPUSH`, `LPOP`, `RPOP`, `LLEN`, `LRANGE`, and blocking
  `BLPOP`
- Streams: `XADD`, `XRANGE`, `XREAD` (with `BLOCK`)
- Transactions: `MULTI`, `EXEC`, `DISCARD`
- Pub/sub: `SUBSCRIBE`, `UNSUBSCRIBE`, `PUBLISH`
- Server information: `CONFIG GET dir|dbfilename` and `INFO replication`
- Replication: `REPLCONF`, `PSYNC ? -1`, `WAIT`. A server acting as master
  answers `PSYNC` with `FULLRESYNC`, sends an empty snapshot, and then
  forwards every write command it runs to its replicas. A replica performs
  the PING / REPLCONF / PSYNC handshake with its master and then applies
  the write commands the master sends, counting the bytes it has processed
  so that `REPLCONF GETACK` can report its offset. A replica refuses write
  commands from its own clients.

## Installing

```
pip install .
```

## Running

Start a server on the default port 6379:

```
minikv
```

Choose the port, and the values that `CONFIG GET dir` and
`CONFIG GET dbfilename` report:

```
minikv --port 6380 --dir /var/lib/minikv --dbfilename dump.rdb
```

Start a replica of a server running on localhost port 6379:

```
minikv --port 6380 --replicaof "localhost 6379"
```

The `--replicaof` value must be a host and a port separated by whitespace;
anything else makes the command exit with status 1.

## Using it from Python

The protocol layer in `minikv.resp` can be used on its own:

```python
import io
from minikv.resp import bulk_array, decode

encoded = bulk_array(["SET", "greeting", "hello"]).encode()
value, size = decode(io.BytesIO(encoded))
```

`decode` returns the value and the number of bytes it consumed;
`decode_exact` does the same but requires a given `RespKind`.

Other modules:

- `minikv.store.Store` holds the keyspace, with `minikv.redislist.RedisList`
  and `minikv.stream.RedisStream` as list and stream values.
- `minikv.dispatch.run_command` runs one parsed `minikv.request.Command`
  against a `minikv.request.Request`.
- `minikv.server.main` starts the same server as the `minikv` command,
  `minikv.server.initialize` builds the application state from a
  `minikv.config.Config`, and `minikv.server.serve` accepts connections for
  an already initialised state.

## What it does not do

- Nothing is persisted. The keyspace lives in memory only and is lost when
  the server stops; `--dir` and `--dbfilename` are only reported back by
  `CONFIG GET` and no snapshot file is read or written.
- A replica reads the snapshot its master sends during the handshake but
  does not load its contents: it starts from an empty keyspace and follows
  the commands propagated after it.
- `KEYS` accepts only the pattern `*`, `INFO` only the `replication`
  section, and `PSYNC` only `? -1`.
- There are no commands for sets, sorted sets or hashes.

## Running the tests

```
pip install .[test]
pytest
```