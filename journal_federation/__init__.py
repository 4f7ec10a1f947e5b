"""
Federated exchange of users and submissions between journal instances.

Each journal instance in a federation owns its users and submissions, and
identifies them with federated ids that end in its three-character instance
code. This package provides what one instance needs to take part:

- Purpose-specific signed tokens (:mod:`.tokens`).
- Storage and browsing of submission archives (:mod:`.archive`).
- Export-token and session authorization of requests (:mod:`.auth`).
- Calls to peers and the import/export/single sign-on protocol
  (:mod:`.federation`).
- Local persistence of users, submissions and reviews
  (:mod:`.services.datastore`).

Quick start
-----------

Set ``JWT_SECRET``, ``JOURNAL_ID`` and ``JOURNAL_URL`` in the environment
(see :mod:`.config`), then serve the WSGI application in ``wsgi.py``, or
create the Flask app yourself:

.. code-block:: python

   from journal_federation.factory import create_app

   app = create_app()

Peers are configured with ``FEDERATION_PEERS``, a JSON object that maps
instance codes to base URLs.
"""
