#!/usr/bin/env python3
"""Verify question counts of completed documents.

For every completed document, total_questions must equal both the number of
question rows and the sum of its chapters' question_count.
"""

import os
import sys

from dotenv import load_dotenv

from quizbank.storage.database import QuestionBankDatabase

# Load environment variables
load_dotenv()

database = QuestionBankDatabase(os.getenv("QUIZBANK_DATABASE_URL", "sqlite:///quizbank.db"))

print("=" * 80)
print("QUESTION COUNT VERIFICATION")
print("=" * 80)

completed = database.list_documents(status="completed")
print(f"\nCompleted documents: {len(completed)}")

mismatches = database.verify_counts()
database.close()

if not mismatches:
    print("  ✓ All counts match")
    print(f"\n{'='*80}")
    sys.exit(0)

print(f"\n{'Document':>10} {'Total':>8} {'Rows':>8} {'Chapters':>10}")
for m in mismatches:
    print(
        f"{m['document_id']:>10} {m['total_questions']:>8} "
        f"{m['question_rows']:>8} {m['chapter_sum']:>10}"
    )

print(f"\n  ✗ {len(mismatches)} MISMATCHES")
print(f"\n{'='*80}")
sys.exit(1)
