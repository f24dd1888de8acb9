"""Database seeder for local development and pagination load testing."""
import asyncio
import argparse
import random
import time
from datetime import datetime, timezone, timedelta

from sqlalchemy import select

from board.database import engine, async_session, Base
from board.models import User, Post, PostAggregate, PostImage, Comment, PostLike

TOPICS = ["python", "fastapi", "postgresql", "redis", "docker", "testing",
          "performance", "security", "caching", "pagination"]


async def seed(small: bool = False):
    num_users = 10 if small else 50
    num_posts = 100 if small else 10000
    max_comments_per_post = 2 if small else 5

    print(f"Seeding: {num_users} users, {num_posts} posts, up to {max_comments_per_post} comments each")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        users = []
        for i in range(num_users):
            user = User(
                email=f"user_{i:04d}@example.com",
                nickname=f"user_{i:04d}",
                profile_image_url=f"/images/profiles/{i:04d}.png" if i % 3 else None,
            )
            # A few withdrawn accounts so author masking shows up in listings.
            if i and i % 17 == 0:
                user.soft_delete()
            session.add(user)
            users.append(user)
        await session.flush()
        print(f"  Created {len(users)} users")

        active_users = [u for u in users if not u.is_deleted]
        batch_size = 500
        total_comments = 0
        total_likes = 0
        for batch_start in range(0, num_posts, batch_size):
            batch_end = min(batch_start + batch_size, num_posts)
            posts = []
            for i in range(batch_start, batch_end):
                created = datetime.now(timezone.utc) - timedelta(days=random.randint(0, 365))
                post = Post(
                    title=f"Post {i}: {random.choice(TOPICS)}"[:26],
                    content=f"This is the full content of post {i}. " * 20,
                    created_at=created,
                    updated_at=created,
                    user_id=random.choice(users).id,
                )
                session.add(post)
                posts.append(post)
            await session.flush()

            # Counters are written from the rows inserted here so the
            # aggregates start out consistent.
            for post in posts:
                comments = random.randint(0, max_comments_per_post)
                for _ in range(comments):
                    session.add(Comment(
                        content="Great post! Very helpful for understanding the topic.",
                        post_id=post.id,
                        user_id=random.choice(active_users).id,
                    ))
                likers = random.sample(active_users, k=random.randint(0, min(5, len(active_users))))
                for liker in likers:
                    session.add(PostLike(post_id=post.id, user_id=liker.id))
                if random.random() < 0.3:
                    session.add(PostImage(
                        post_id=post.id, image_url=f"/images/posts/{post.id}.png", image_order=0, is_main=True,
                    ))
                session.add(PostAggregate(
                    post_id=post.id,
                    view_count=random.randint(0, 10000),
                    like_count=len(likers),
                    comment_count=comments,
                ))
                total_comments += comments
                total_likes += len(likers)
            await session.flush()

            print(f"  Batch {batch_start}-{batch_end}: posts created")

        await session.commit()

        live_posts = (await session.execute(select(Post.id).where(Post.live()))).scalars().all()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Users: {num_users} ({num_users - len(active_users)} withdrawn)")
    print(f"  Posts: {len(live_posts)}")
    print(f"  Comments: {total_comments}")
    print(f"  Likes: {total_likes}")


def main():
    parser = argparse.ArgumentParser(description="Seed the board database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (100 posts)")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
