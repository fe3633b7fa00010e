"""
Scan Services

Organized by the stage of a scan they serve:

1. validation/ - SSRF guard
   - target_validator.py: URL check, DNS resolution, private address rejection

2. browser/ - Browser automation
   - session_manager.py: Stealth Chrome launch, scoped sessions, navigation + settle

3. challenge/ - Anti-bot detection
   - challenge_detector.py: Phrase, markup and emptiness signals on the rendered page

4. engines/ - Accessibility audits
   - htmlcs_engine.py: HTML_CodeSniffer (WCAG2AA / WCAG2AAA)
   - axe_engine.py: axe-core with cumulative WCAG tags
   - aggregator.py: Runs both engines, isolates failures, attaches evidence

5. evidence/ - Screenshots
   - evidence_capture.py: Highlighted element clip with parent/viewport fallback

6. orchestration/ - Job coordination
   - orchestrator.py: validating -> rendering -> challenge_check -> auditing -> done

7. reports/ - Persistence and intake
   - report_store.py: ScanReport CRUD
   - submission.py: Daily public quota, job creation, Celery dispatch
"""
