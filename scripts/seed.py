"""Seed a development database through the service layer."""
import asyncio
import argparse
import random
import time
from fastblog.database import engine, async_session, Base
from fastblog.models import ArticleStatus
from fastblog.schemas import ArticleCreate, CommentCreate, UserCreate
from fastblog.security import create_access_token
from fastblog.services import article_service, engagement_service, user_service

TAGS = ["python", "rust", "fastapi", "postgresql", "redis", "docker", "writing",
        "design", "startups", "productivity", "testing", "performance"]

CATEGORIES = ["Technology", "Programming", "Design", "Writing", "Business"]

PARAGRAPH = (
    "Shipping software is mostly about feedback loops. The faster you learn "
    "what broke, the sooner you can fix it, and the cheaper every fix becomes. "
)


async def seed(small: bool = False):
    num_users = 8 if small else 40
    num_articles = 40 if small else 1000

    print(f"Seeding: {num_users} users, {num_articles} articles")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        users = []
        for i in range(num_users):
            user = await user_service.create_user(
                session,
                UserCreate(
                    username=f"writer_{i:03d}",
                    email=f"writer_{i:03d}@example.com",
                    display_name=f"Writer {i}",
                    bio=f"Writer {i} covers {random.choice(TAGS)} and {random.choice(TAGS)}.",
                ),
                is_staff=(i == 0),
            )
            users.append(user)
        print(f"  Created {len(users)} users (first one is staff)")

        follows = 0
        for user in users:
            for other in random.sample(users, k=min(5, len(users))):
                if other["id"] != user["id"]:
                    await user_service.follow_user(session, user["id"], other["id"])
                    follows += 1
        print(f"  Created {follows} follow edges")

        published = []
        for i in range(num_articles):
            topic = random.choice(TAGS)
            status = ArticleStatus.PUBLISHED if random.random() > 0.15 else ArticleStatus.DRAFT
            article = await article_service.create_article(
                session,
                random.choice(users)["id"],
                ArticleCreate(
                    title=f"Notes on {topic} #{i}",
                    subtitle=f"What {topic} taught us in production",
                    content=f"<p>{PARAGRAPH * random.randint(5, 60)}</p>",
                    tags=random.sample(TAGS, k=random.randint(1, 4)),
                    categories=[random.choice(CATEGORIES)],
                    status=status,
                ),
            )
            if status == ArticleStatus.PUBLISHED:
                published.append(article)
        await session.flush()
        print(f"  Created {num_articles} articles ({len(published)} published)")

        for article in published:
            for reader in random.sample(users, k=random.randint(0, len(users) // 2)):
                await article_service.record_view(session, article["id"])
                if random.random() < 0.5:
                    await article_service.record_read(session, article["id"])
                if random.random() < 0.3:
                    await engagement_service.toggle_clap(
                        session, reader["id"], article["id"], random.randint(1, 50)
                    )
                if random.random() < 0.1:
                    await engagement_service.bookmark_article(session, reader["id"], article["id"])
                if random.random() < 0.1:
                    await engagement_service.add_comment(
                        session, reader["id"], article["id"],
                        CommentCreate(content=f"Thanks for writing this, {article['author']['username']}!"),
                    )

        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Staff token: {create_access_token(users[0]['id'], users[0]['username'])}")


def main():
    parser = argparse.ArgumentParser(description="Seed the fastblog database")
    parser.add_argument("--small", action="store_true", help="Use a small dataset (40 articles)")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
