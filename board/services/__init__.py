# Services package.
#
# Each module exposes async functions for one slice of the engine:
#
#   aggregate_store  — atomic per-post counters + drift reconciliation
#   cursor_query     — keyset-paginated post/comment listings and post detail
#   like_service     — like toggle
#   comment_service  — comment create / edit / soft-delete / list
#   post_service     — post lifecycle, detail views, deletion cascade
#   lookups          — shared live-entity point lookups
#
# All service functions take an AsyncSession first; the router layer owns
# the transaction through the ``get_db`` dependency.
