#!/usr/bin/env python3
"""
docmodel Demo - Defines models, inserts documents and populates references.

Run: python demo.py
"""

import asyncio
import tempfile

from docmodel import ModelRegistry, Settings, StorageError, model, setup_logging


async def main():
    print("=" * 60)
    print("docmodel Demo - Models and Populate")
    print("=" * 60)
    print()

    with tempfile.TemporaryDirectory() as data_dir:
        settings = Settings(data_dir=data_dir, log_level="warning")
        setup_logging(settings)
        registry = ModelRegistry()
        print(f"[Setup] Using data directory: {data_dir}")

        # 1. Define models
        print("\n[Step 1] Defining models...")

        Author = model(
            "Author",
            {
                "name": {"type": str, "required": True},
                "email": {"type": str, "unique": True},
                "books": {"type": list, "ref": "Book", "default": list},
            },
            registry=registry,
            settings=settings,
        )
        Book = model(
            "Book",
            {
                "title": {"type": str, "required": True},
                "year": {"type": int, "index": True},
                "author": {"type": str, "ref": "Author"},
            },
            registry=registry,
            settings=settings,
        )
        print(f"  - Registered models: {', '.join(registry.names())}")

        # 2. Insert authors and books
        print("\n[Step 2] Creating documents...")

        kafka = await Author.create({"name": "Franz Kafka", "email": "franz@example.com"})
        titles = [("Der Process", 1925), ("Das Schloss", 1926), ("Amerika", 1927)]
        book_ids = []
        for title, year in titles:
            book = await Book.create({"title": title, "year": year, "author": kafka["_id"]})
            book_ids.append(book["_id"])
            print(f"  - Created: {title} ({year})")

        await Author.update({"_id": kafka["_id"]}, {"books": book_ids})

        # 3. Unique index
        print("\n[Step 3] Inserting a duplicate email...")
        try:
            await Author.create({"name": "Impostor", "email": "franz@example.com"})
        except StorageError as e:
            print(f"  - Rejected: {e.message}")

        # 4. Populate
        print("\n[Step 4] Populating references...")

        authors = await Author.find({}).populate("books").exec()
        for author in authors:
            print(f"  {author['name']}:")
            for book in author["books"]:
                print(f"    - {book['title']} ({book['year']})")

        latest = await Book.find_one({}).sort({"year": -1}).populate("author")
        print(f"\n  Latest book: {latest['title']} by {latest['author']['name']}")

        # 5. Counts
        print("\n[Step 5] Counting...")
        print(f"  - Books after 1925: {await Book.count({'year': {'$gt': 1925}})}")
        print(f"  - Removed: {await Book.delete({'year': 1927})}")
        print(f"  - Books left: {await Book.count()}")

        registry.close_all()

    print("\n" + "=" * 60)
    print("Demo Complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
