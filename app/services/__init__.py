# Services package.
#
#   article_service   - ArticleWorkflowService: create / find / favorite / delete
#   favorite_service  - FavoriteToggle over the favorites join table
#   tag_service       - TagReconciler + cached tag listing
#   slug              - SlugGenerator
#   profile_service   - profiles and the follow relation
#   user_service      - registration and lookup for User
#
# Service functions take an AsyncSession as their first data argument and
# open their own ``transaction(db)`` scope around every public operation.
