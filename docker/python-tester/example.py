# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Smoke test: the node answers basic queries and accepts the example requests.

Run by ``witnet-e2e-tester``, which provides ``node`` (a NodeClient),
``requests`` (fixtures from /requests) and ``log``.
"""


def main(node, requests):
    pkh = node.get_pkh()
    assert pkh, "node did not report a public key hash"
    log.info("node pkh: %s", pkh)

    chain = node.get_blockchain(epoch=0, limit=10)
    assert isinstance(chain, list), f"unexpected getBlockChain result: {chain!r}"
    log.info("first %d block(s) of the chain received", len(chain))

    balance = node.get_balance()
    log.info("node balance: %s", balance)

    for name, request in requests.items():
        method = request["method"]
        result = node.call(method, request.get("params"))
        log.info("%s (%s) -> %s", name, method, result)
