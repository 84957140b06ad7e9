# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for one concern:
#
#   slug_service        — unique, URL-safe article slugs
#   article_service     — article lifecycle, listings and statistics
#   engagement_service  — claps, bookmarks, comments and their counters
#   ranking_service     — follow feed and trending list
#   search_service      — keyword relevance search and suggestions
#   user_service        — accounts and follow edges
#   assembler           — article views personalised for the caller
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.
