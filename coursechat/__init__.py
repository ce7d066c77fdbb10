"coursechat: course chatbot backend (auth, course access, ingestion, metadata runs)."
