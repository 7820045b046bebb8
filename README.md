# mdnslite

A small multicast DNS (mDNS) library. It can publish a service on the local
network and discover services published by others, using the mDNS groups
`224.0.0.251` and `ff02::fb` on port 5353. DNS messages are built and parsed
with `dnspython`.

The package has three modules:

- `mdnslite.zone` – `MDNSService`, `Question`, `Record` and the `Zone` protocol;
- `mdnslite.server` – `Server`, `Config` and the helpers `build_responses` and
  `handle_question`;
- `mdnslite.client` – `query`, `lookup`, `default_params`, `build_query`,
  `QueryParam`, `ServiceEntry` and `ResponseTracker`.

## Installation

```
pip install mdnslite
```

## Publishing a service

Describe the service with `MDNSService` and serve it with `Server`:

```python
from mdnslite.zone import MDNSService
from mdnslite.server import Config, Server

service = MDNSService(
    "My Web Server",           # instance
    "_http._tcp",              # service
    "local.",                  # domain (must end with a dot)
    "myhost.local.",           # host name (must end with a dot)
    8080,                      # port
    ["192.168.0.10"],          # addresses
    ["path=/"],                # TXT entries
)

with Server(Config(zone=service)) as server:
    ...  # queries are answered until the block ends
```

Pass an empty domain to use `local.`, an empty host name to use the machine's
own name followed by a dot, and an empty address list to look the addresses up
from the host name (and, failing that, from the host name followed by the
domain). `ValueError` is raised for a missing instance, service or port, for a
domain or host name that does not end with a dot, for an address that is not a
valid IP address, and when no addresses can be found.

`MDNSService.records(question)` answers:

- `_services._dns-sd._udp.<domain>` (ANY or PTR) with a PTR to the service type;
- `<service>.<domain>` (ANY or PTR) with a PTR to the instance, followed by its
  SRV, A, AAAA and TXT records;
- `<instance>.<service>.<domain>`: ANY gives SRV, A, AAAA and TXT; SRV gives
  SRV, A and AAAA; A, AAAA and TXT give just those records;
- the host name, for A or AAAA questions, with its addresses.

Anything else gets an empty list. Records carry a TTL of 120 seconds. Any
object with a `records(question)` method returning a list of `Record` can
serve as a `Zone`.

`Config` also takes `interface` (a network interface name to join the groups
on), `log_empty_responses` (log queries that produced no answers) and `logger`.
`Server` raises `OSError` when it can listen on neither IPv4 nor IPv6.
Questions with the unicast-response bit set in their class are answered in a
unicast response carrying the query's id; the others in a response with id 0.
Queries with a non-zero opcode or rcode, or with the truncated flag, are
rejected by `build_responses` with `ValueError`.

## Discovering services

```python
import queue
from mdnslite.client import lookup

entries = queue.Queue()
lookup("_http._tcp", entries)   # blocks for the default one-second timeout

while not entries.empty():
    entry = entries.get()
    print(entry.name, entry.host, entry.port, entry.info)
```

For more control, start from `default_params` and call `query`:

```python
import queue
import threading
from mdnslite.client import default_params, query

params = default_params("_http._tcp")
params.entries = queue.Queue()
params.timeout = 2.0
params.disable_ipv6 = True

query(params, threading.Event())   # set the event from another thread to stop early
```

`QueryParam` also has `domain` (default `local`), `interface`,
`want_unicast_response`, `disable_ipv4` and `logger`.

Each `ServiceEntry` is put on the queue once, as soon as it has an address, a
port and TXT information; entries that are still incomplete are queried again
by name. A full queue drops the entry. `ResponseTracker` does this assembling
and can be fed `dns.message.Message` objects directly.

## What it does not do

There is no command-line tool; the package is used from Python code. Truncated
queries are not supported, and a server does not announce its service
unprompted – it only answers queries.

## Running the tests

```
pip install -e ".[test]"
pytest
```