"""Seed a development database through the service layer."""
import argparse
import asyncio
import random
import time

from app.database import Base, async_session, engine
from app.schemas import ArticleCreate, UserCreate
from app.services import user_service
from app.services.article_service import article_workflow

TAGS = ["python", "fastapi", "postgresql", "redis", "docker", "kubernetes",
        "react", "typescript", "aws", "devops", "testing", "performance"]


async def seed(small: bool = False):
    num_users = 5 if small else 25
    num_articles = 20 if small else 500

    print(f"Seeding: {num_users} users, {num_articles} articles")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        user_ids = []
        for i in range(num_users):
            user = await user_service.create_user(
                session,
                UserCreate(
                    username=f"user_{i:04d}",
                    email=f"user_{i:04d}@example.com",
                    password="password",
                    bio=f"I am test user number {i}. I write about technology.",
                ),
            )
            user_ids.append(user["id"])
        print(f"  Created {len(user_ids)} users")

        slugs = []
        for i in range(num_articles):
            topic = random.choice(TAGS)
            article = await article_workflow.create_article(
                session,
                ArticleCreate(
                    title=f"Article {i}: How to run {topic} in production",
                    description=f"A guide to {topic} in production.",
                    body=f"This is the full body of article {i}. " * 20,
                    tagList=random.sample(TAGS, k=random.randint(1, 4)),
                ),
                random.choice(user_ids),
            )
            slugs.append(article["slug"])
        print(f"  Created {len(slugs)} articles")

        favorites = 0
        for slug in slugs:
            for user_id in random.sample(user_ids, k=random.randint(0, len(user_ids) // 2)):
                await article_workflow.favorite_article(session, user_id, slug)
                favorites += 1
        print(f"  Created {favorites} favorites")

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")


def main():
    parser = argparse.ArgumentParser(description="Seed the Conduit database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (20 articles)")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
