# platinum

A small event-driven HTTP/1.1 server. It serves static files from a web
root and hands dynamic requests (any `POST`, or any other request whose URL
carries a query string) to a FastCGI peer such as a PHP process manager,
relaying the answer back to the client as a chunked response.

## Installing

```
pip install .
```

For running the tests:

```
pip install .[test]
pytest
```

## Configuration

By default the server reads its settings from `/etc/platinum.yaml`:

```yaml
server:
  port: 8080
  thread: 4
  method: [GET, HEAD, POST]

log_enable: true

fcgi:
  listen: inet            # or "unix"
  addr: 127.0.0.1:9000    # or a socket path such as /run/php-fpm.sock
  fcgi-root: /srv/www/php

resource:
  static: [html, css, js, png, jpg]
  dynamic: [php]
  forbidden: [private]
  www-root: /srv/www/html
  default-root: /srv/www/default
  index: index.html
```

The `server` and `fcgi` sections must hold exactly the three keys shown, and
`resource` exactly the six keys shown; `log_enable` must be a boolean.
`fcgi.listen` must be `unix` or `inet`; anything else raises
`platinum.config.ConfigError`.

- `server.method` lists the methods served; any other method gets a 501 page.
- `resource.forbidden` entries are matched as substrings of the requested
  directory; a match gets a 403 page.
- `default-root` holds the error pages `403.html`, `404.html` and `501.html`.
- `index` is served when the URL names a directory.
- The number of worker threads is `server.thread`, capped at the number of CPUs.
- With `log_enable: true` the server logs at INFO level.

## Running

```
platinum
platinum --config ./platinum.yaml
```

Each worker thread runs its own event loop and listening socket on the
configured port (with `SO_REUSEPORT` where the platform has it), so the
kernel spreads connections across them. Ctrl-C stops the workers.

Static responses carry `Date`, `Server`, `Connection`, `Content-Type` and
`Content-Length` headers. Unless the request sent `Connection: Keep-Alive`,
the connection is closed once the response has been written.

## Using it from Python

```python
from platinum.config import load_config, set_config
from platinum.server import Server

set_config(load_config("/etc/platinum.yaml"))
server = Server()
server.start()
server.exec()
```

`Server(config)` may also be given a `Config` directly, and `Server.stop()`
asks the workers to finish. A `Config` can be built from an already parsed
document with `Config.from_mapping(data)`.

Smaller pieces are usable on their own:

- `platinum.static_handler.mime_type(".html")` gives the content type sent
  for a file suffix (`text/plain` when unknown).
- `platinum.fcgi_handler.chunk(b"data")` frames a body piece for chunked
  transfer encoding; `build_params` and `build_response` give the FastCGI
  parameters for a request and the response head for the peer's headers.
- `platinum.affair.split_url`, `url_suffix` and `url_query_string` take a
  request URL apart.
- `platinum.handler.ResponseBuilder` assembles a `Response`, whose `build()`
  returns the serialised head.
- `platinum.connection.EventLoop`, `Connection`, `platinum.acceptor.Acceptor`,
  `platinum.connector.Connector` and `platinum.tcp_server.TcpServer` form the
  non-blocking networking layer underneath.

## What it does not do

- No TLS, no HTTP/2, no directory listings.
- Request bodies are read by `Content-Length` only; chunked request bodies
  are not understood.
- FastCGI output is always relayed as a chunked response with
  `Connection: keep-alive`; there is no idle timeout for kept-alive clients.